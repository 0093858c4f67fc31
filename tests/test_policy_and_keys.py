import re

import pytest

from chat_uploads.core.errors import ValidationError
from chat_uploads.schemas.uploads import FileCategory
from chat_uploads.services.policy import MIB, UPLOAD_POLICIES, policy_for, validate_upload
from chat_uploads.storage.keys import (
    file_extension,
    generate_object_key,
    owner_prefix,
    preview_key,
    thumbnail_key,
)


# -------------------------
# Policy
# -------------------------
@pytest.mark.parametrize(
    "category,max_mb",
    [
        (FileCategory.AVATAR, 5),
        (FileCategory.IMAGE, 10),
        (FileCategory.VIDEO, 50),
        (FileCategory.AUDIO, 20),
        (FileCategory.DOCUMENT, 25),
    ],
)
def test_policy_ceilings(category, max_mb):
    assert UPLOAD_POLICIES[category].max_bytes == max_mb * MIB


def test_policy_ceiling_is_inclusive():
    validate_upload(FileCategory.AVATAR, "image/png", 5 * MIB)
    with pytest.raises(ValidationError):
        validate_upload(FileCategory.AVATAR, "image/png", 5 * MIB + 1)


def test_gif_allowed_for_images_not_avatars():
    validate_upload(FileCategory.IMAGE, "image/gif", 2048)
    with pytest.raises(ValidationError) as exc:
        validate_upload(FileCategory.AVATAR, "image/gif", 2048)
    assert "image/gif" in exc.value.message


def test_tiny_images_rejected():
    with pytest.raises(ValidationError, match="too small"):
        validate_upload(FileCategory.IMAGE, "image/png", 99)
    validate_upload(FileCategory.IMAGE, "image/png", 100)


@pytest.mark.parametrize("size", [0, -1])
def test_non_positive_size_rejected(size):
    with pytest.raises(ValidationError):
        validate_upload(FileCategory.DOCUMENT, "text/plain", size)


def test_unknown_category():
    with pytest.raises(ValidationError):
        policy_for("sticker")


# -------------------------
# Keys
# -------------------------
def test_object_key_format():
    key = generate_object_key(FileCategory.VIDEO, "user-9", ".mp4", now_ms=1700000000000)
    assert re.match(r"^videos/user-9/1700000000000_[0-9a-f]{8}\.mp4$", key)


def test_object_keys_do_not_collide():
    keys = {generate_object_key(FileCategory.IMAGE, "u", ".jpg", now_ms=1) for _ in range(200)}
    assert len(keys) == 200


def test_identifier_cannot_escape_folder():
    key = generate_object_key(FileCategory.AVATAR, "../other/user", ".png", now_ms=1)
    assert key.startswith("avatars/")
    assert ".." not in key
    assert key.count("/") == 2


@pytest.mark.parametrize(
    "name,ext",
    [("pic.JPG", ".jpg"), ("archive.tar.gz", ".gz"), ("README", ".bin"), ("", ".bin")],
)
def test_file_extension(name, ext):
    assert file_extension(name) == ext


def test_derivative_keys():
    key = "avatars/u1/1700000000000_ab12cd34.jpg"
    assert thumbnail_key(key) == "avatars/u1/1700000000000_ab12cd34_thumb.webp"
    assert preview_key(key) == "avatars/u1/1700000000000_ab12cd34_preview.jpeg"
    assert thumbnail_key("documents/u1/noext") == "documents/u1/noext_thumb.webp"


def test_owner_prefix_matches_generated_keys():
    key = generate_object_key(FileCategory.AVATAR, "user-1", ".jpg")
    assert owner_prefix(FileCategory.AVATAR, "user-1") == "avatars/user-1/"
    assert key.startswith(owner_prefix(FileCategory.AVATAR, "user-1"))
    assert owner_prefix(FileCategory.AVATAR, "../x") == "avatars/_x/"

# Infra helpers for chat-uploads

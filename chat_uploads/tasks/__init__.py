# Celery tasks for chat-uploads

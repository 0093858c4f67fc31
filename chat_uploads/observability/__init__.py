# Observability package for chat-uploads

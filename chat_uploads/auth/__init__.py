# Auth package for chat-uploads

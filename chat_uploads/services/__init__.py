# Services package for chat-uploads

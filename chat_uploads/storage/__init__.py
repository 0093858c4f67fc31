# Storage package for chat-uploads

# Core package for chat-uploads

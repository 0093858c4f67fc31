# Schemas package for chat-uploads

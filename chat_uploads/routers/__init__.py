# Routers package for chat-uploads

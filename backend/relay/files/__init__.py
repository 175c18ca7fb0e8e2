"""Image upload module for the chat relay.

Uploads are stored on disk together with a pixelated thumbnail and served
back as static files. Chat state is untouched until the client publishes
the returned URLs as a media message.
"""

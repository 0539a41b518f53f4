"""External providers: language models and similarity search."""

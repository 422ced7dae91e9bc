"""coderag: code chunking, embedding, hybrid search and retrieval-augmented chat."""

__version__ = "0.1.0"

"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Web page fetching and main-text extraction
- Document chunking with overlap
- Chunk storage with vector search (MongoDB Atlas or local FAISS)
- Ingestion of URLs into the store
- Semantic retrieval with metadata filters
- Prompt assembly and answering
"""

"""Knowledge entries, embeddings, similarity search and rebuilds."""

"""
Local index: per-vault embeddings, keyword postings and ranking.

Vectors and postings live in one SQLite file; search and related-notes
lookups are brute-force scans over the stored vectors.
"""

"""
Knowledge base package for vault search.

Provides the note source for a Markdown vault and the ``vault-search``
command line.
"""

"""Pure matching algorithms used by the dispatch scheduler."""

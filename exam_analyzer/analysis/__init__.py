"""
Document Analysis

1. Orchestrate  : primary → fallback AI provider, retry with backoff, chunking
2. Normalize    : validate/coerce AI JSON into the canonical question tree
3. Heuristic    : regex extraction when every provider failed
"""

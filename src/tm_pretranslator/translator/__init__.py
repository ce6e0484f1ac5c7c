"""Translation provider, prompts and retry policy."""

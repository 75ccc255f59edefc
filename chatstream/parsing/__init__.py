"""Tag protocol parsing: normalizer, grammar table, extractor."""

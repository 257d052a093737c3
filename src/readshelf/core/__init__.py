"""核心逻辑."""

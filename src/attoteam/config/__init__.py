"""Team configuration schema and YAML loader."""

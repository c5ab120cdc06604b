"""Speed presets, native tool invocation and per-kind encode strategies."""

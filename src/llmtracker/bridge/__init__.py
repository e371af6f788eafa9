"""Native messaging bridge: framing, reconnecting client and stdin/stdout host."""

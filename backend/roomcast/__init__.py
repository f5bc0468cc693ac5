"""roomcast: real-time multi-room chat backend."""

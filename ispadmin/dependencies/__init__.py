"""FastAPI dependencies wiring requests to the gate and engines."""

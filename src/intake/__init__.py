"""intake: document intake, work-item mapping, and suggestion confirmation."""

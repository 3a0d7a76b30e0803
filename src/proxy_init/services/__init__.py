"""Rule generation and execution services for proxy-init."""

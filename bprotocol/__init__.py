"""Avatar and delegation layer over a Compound-style money market."""

"""Research project lifecycle, audit and access API."""

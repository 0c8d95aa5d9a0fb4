"""REST API over template validation and graph analysis."""

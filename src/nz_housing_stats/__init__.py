"""NZ housing listing statistics: collection pipeline and aggregation queries."""

"""HTTP surface: state endpoint and task control."""

"""HTTP surface: JSON routes and the debate event stream."""

"""Research utilities — analytics over stored fusion history."""

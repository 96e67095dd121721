"""Q16.16 fixed-point arithmetic and activation functions."""

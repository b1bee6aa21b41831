"""Registry transport, redirect resolution and range reading."""

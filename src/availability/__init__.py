"""Kiểm tra username còn trống qua Bloom filter -> cache -> store."""

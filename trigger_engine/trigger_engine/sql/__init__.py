"""SQL helpers: identifier quoting and manual SQL capsules."""

"""Site module: static front-end pages and legacy menu redirects."""

"""point-of-sale core for Buteco São Benedito: tables, orders and daily sales"""

__version__ = "1.0.0"

"""
Inventory module: trailers, automatic pricing and manufacturer spreadsheet/PDF uploads.
"""

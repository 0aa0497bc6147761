"""Public listing backend for the kids' party marketplace"""

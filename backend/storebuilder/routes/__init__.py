"""Store Builder Routes"""

"""Store Builder Services"""

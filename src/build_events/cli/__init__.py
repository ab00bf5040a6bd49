"""Build Events CLI。"""

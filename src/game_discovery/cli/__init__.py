"""CLI パッケージ。"""

"""推薦エンジンのドメイン層。"""

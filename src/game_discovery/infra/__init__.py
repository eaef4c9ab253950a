"""外部サービスと永続化のインフラ層。"""

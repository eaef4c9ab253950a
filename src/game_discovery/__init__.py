"""インディーゲーム発見サイトの推薦エンジン。"""

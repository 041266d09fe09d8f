# tutor_dashboard/config.py

APP_TITLE = "生徒管理システム"
SCHOOL_NAME = "プログラミング教室"

# Firestore コレクション名
COL_STUDENTS = "students"
COL_MENTORS = "mentors"
COL_CLASSES = "classes"
COL_CURRICULA = "curricula"
COL_CLASS_RECORDS = "class_records"
COL_TEMPLATES = "comment_templates"
COL_MEMOS = "student_memos"

COURSES = [
    "スクラッチプログラミング",
    "ロボットプログラミング",
    "Pythonプログラミング",
    "ウェブプログラミング",
    "ゲーム制作",
]

DRIVE_FOLDER_ROOT = "/生徒フォルダ"

MENTOR_STATUSES = {"active": "稼働中", "inactive": "休職中", "resigned": "退職"}

# タイピング級
TYPING_GRADES = ["12級", "11級", "10級", "9級", "8級", "7級", "6級", "5級", "4級", "3級", "2級", "1級"]
BASIC_GRADES = ("12級", "11級", "10級")

# 9級以上のテーマ(級ごとに固定)
TYPING_THEMES = {
    "9級": ["しりとり2文字", "しりとり3文字"],
    "8級": ["しりとり4文字", "しりとり5文字"],
    "7級": ["食べもの", "動物", "ことわざ"],
    "6級": ["魚", "植物", "エコ生活のコツ"],
    "5級": ["回文", "都道府県", "掃除のコツ"],
    "4級": ["四字熟語", "料理の名前", "早口言葉"],
    "3級": ["中学英単語総合", "日本の昔話", "スポーツの起源"],
    "2級": ["中学英単語総合", "世界の童話", "オリジナル"],
    "1級": ["高校英単語総合", "料理のレシピ", "名作"],
}

# 評価レベル(低 → 高), 1..18
TYPING_LEVELS = [
    "E-", "E", "E+",
    "D-", "D", "D+",
    "C-", "C", "C+",
    "B-", "B", "B+",
    "A-", "A", "A+",
    "S", "Good", "Fast",
]
LEVEL_VALUES = {label: rank for rank, label in enumerate(TYPING_LEVELS, start=1)}

WRITING_STEPS = ("1", "2", "3")

NO_RECORD = "記録なし"

DEFAULT_COMMENT_TEMPLATES = [
    {"category": "良い点", "text": "今日も集中して取り組むことができました。"},
    {"category": "良い点", "text": "タイピングの正確性が向上しています。"},
    {"category": "良い点", "text": "新しい概念をしっかりと理解できています。"},
    {"category": "改善点", "text": "基本操作の復習が必要です。"},
    {"category": "改善点", "text": "もう少しゆっくりと丁寧に進めましょう。"},
    {"category": "次回予定", "text": "前回の続きから始めます。"},
    {"category": "次回予定", "text": "復習を中心に進める予定です。"},
]

DEMO_STUDENTS = [
    {"name": "田中太郎", "age": 10, "course": "スクラッチプログラミング"},
    {"name": "佐藤花子", "age": 12, "course": "ロボットプログラミング"},
    {"name": "鈴木一郎", "age": 8, "course": "スクラッチプログラミング"},
]

# 評価シート
SHEET_WIDTH = 1200
SHEET_MIN_HEIGHT = 1650
SHEET_LOCAL_FONT = "font.ttf"  # SHEET_FONT_PATH 未設定時に探す

DRIVE_SCOPES = ["https://www.googleapis.com/auth/drive.file"]

# tutor_dashboard/store.py
# -----------------------------
# データアクセス層 (Firestore)
# -----------------------------
# 全関数は Firestore クライアントを第1引数に取る。
# 少量データ前提のため, 並び替え・キーワード検索はクライアント側で行う。

from __future__ import annotations
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

import pandas as pd
from google.cloud import firestore as gcf

from .common import to_jst, today_jst, parse_date
from .config import (
    COL_STUDENTS, COL_MENTORS, COL_CLASSES, COL_CURRICULA, COL_CLASS_RECORDS,
    COL_TEMPLATES, COL_MEMOS, DEFAULT_COMMENT_TEMPLATES, DEMO_STUDENTS,
    DRIVE_FOLDER_ROOT, MENTOR_STATUSES, WRITING_STEPS,
)
from .errors import ValidationError, NotFoundError, DuplicateNameError
from .typing_result import decode_typing_result

logger = logging.getLogger(__name__)

STUDENT_FIELDS = ("name", "age", "course", "drive_folder")
MENTOR_FIELDS = ("last_name", "first_name", "email", "phone", "emergency_contact", "specialty", "status", "join_date")
CLASS_FIELDS = ("name", "description")
CURRICULUM_FIELDS = ("class_id", "title", "description")
RECORD_FIELDS = (
    "student_id", "student_name", "date", "class_range", "typing_result",
    "writing_result", "writing_step", "comment", "next_class_range", "instructor",
)
TEMPLATE_FIELDS = ("category", "text")
MEMO_FIELDS = ("student_id", "content", "author")


# -----------------------------
# 共通
# -----------------------------

def _row(snap) -> Dict[str, Any]:
    return {"id": snap.id, **(snap.to_dict() or {})}


def _pick(data: Optional[Dict[str, Any]], fields: Sequence[str]) -> Dict[str, Any]:
    data = data or {}
    return {k: data[k] for k in fields if k in data}


def _strip(value: Any) -> str:
    return "" if value is None else str(value).strip()


def _ts(value: Any) -> float:
    if isinstance(value, datetime):
        return value.timestamp()
    return 0.0


def _contains(row: Dict[str, Any], keyword: str, fields: Iterable[str]) -> bool:
    kw = keyword.lower()
    return any(kw in _strip(row.get(f)).lower() for f in fields)


def _require(data: Dict[str, Any], fields: Dict[str, str]) -> None:
    missing = [label for key, label in fields.items() if not _strip(data.get(key))]
    if missing:
        raise ValidationError(f"必須項目を入力してください: {', '.join(missing)}")


def _stream(db, collection: str, **equals) -> List[Dict[str, Any]]:
    q = db.collection(collection)
    for key, value in equals.items():
        q = q.where(filter=gcf.FieldFilter(key, "==", value))
    return [_row(d) for d in q.stream()]


def _get(db, collection: str, doc_id: Optional[str]) -> Optional[Dict[str, Any]]:
    if not doc_id:
        return None
    snap = db.collection(collection).document(doc_id).get()
    if not snap.exists:
        return None
    return _row(snap)


def _create(db, collection: str, data: Dict[str, Any]) -> Dict[str, Any]:
    ref = db.collection(collection).document()
    now = to_jst()
    payload = {**data, "created_at": now, "updated_at": now}
    ref.set(payload)
    logger.info("created %s/%s", collection, ref.id)
    return {"id": ref.id, **payload}


def _update(db, collection: str, doc_id: str, patch: Dict[str, Any], missing_msg: str) -> Dict[str, Any]:
    ref = db.collection(collection).document(doc_id)
    snap = ref.get()
    if not snap.exists:
        raise NotFoundError(missing_msg)
    payload = {**patch, "updated_at": to_jst()}
    ref.update(payload)
    logger.info("updated %s/%s", collection, doc_id)
    return {"id": doc_id, **(snap.to_dict() or {}), **payload}


def _delete(db, collection: str, doc_id: str) -> bool:
    ref = db.collection(collection).document(doc_id)
    if not ref.get().exists:
        return False
    ref.delete()
    logger.info("deleted %s/%s", collection, doc_id)
    return True


def _renumber(batch, db, collection: str, rows: List[Dict[str, Any]]) -> None:
    """rows の並びどおりに order を 1..N で振り直す(バッチに積むだけ)."""
    now = to_jst()
    for i, r in enumerate(rows, start=1):
        if r.get("order") != i:
            batch.update(db.collection(collection).document(r["id"]), {"order": i, "updated_at": now})
            r["order"] = i


def _by_order(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(rows, key=lambda r: (r.get("order") or 0, _ts(r.get("created_at")), r["id"]))


def _check_permutation(current: List[Dict[str, Any]], ordered_ids: Sequence[str]) -> None:
    ids = [str(i) for i in ordered_ids]
    if len(set(ids)) != len(ids):
        raise ValidationError("並び順に重複したIDがあります。")
    known = {r["id"] for r in current}
    unknown = [i for i in ids if i not in known]
    if unknown:
        raise NotFoundError(f"存在しない項目があります: {', '.join(unknown)}")
    if len(ids) != len(known):
        raise ValidationError("並び順にすべての項目を含めてください。")


# -----------------------------
# students (生徒)
# -----------------------------

def _clean_student(data: Dict[str, Any]) -> Dict[str, Any]:
    out = _pick(data, STUDENT_FIELDS)
    for k in ("name", "course", "drive_folder"):
        if k in out:
            out[k] = _strip(out[k])
    if "age" in out:
        try:
            out["age"] = int(out["age"])
        except (TypeError, ValueError):
            raise ValidationError("年齢は数値で入力してください。")
        if out["age"] <= 0:
            raise ValidationError("年齢は1以上で入力してください。")
    return out


def students_list(db, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    filters = filters or {}
    rows = _stream(db, COL_STUDENTS, **({"course": filters["course"]} if filters.get("course") else {}))
    kw = _strip(filters.get("keyword"))
    if kw:
        rows = [r for r in rows if _contains(r, kw, ("name", "course"))]
    return sorted(rows, key=lambda r: (_ts(r.get("created_at")), r["id"]))


def students_search(db, keyword: str) -> List[Dict[str, Any]]:
    return students_list(db, {"keyword": keyword})


def student_get(db, doc_id: str) -> Optional[Dict[str, Any]]:
    return _get(db, COL_STUDENTS, doc_id)


def student_create(db, data: Dict[str, Any]) -> Dict[str, Any]:
    clean = _clean_student(data)
    _require(clean, {"name": "生徒名", "age": "年齢", "course": "コース"})
    if not clean.get("drive_folder"):
        clean["drive_folder"] = f"{DRIVE_FOLDER_ROOT}/{clean['name']}"
    return _create(db, COL_STUDENTS, clean)


def student_update(db, doc_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
    clean = _clean_student(patch)
    if "name" in clean and not clean["name"]:
        raise ValidationError("生徒名は必須です。")
    return _update(db, COL_STUDENTS, doc_id, clean, "生徒が見つかりません")


def student_delete(db, doc_id: str) -> bool:
    # 授業記録は生徒名を複製保持しているので残す
    return _delete(db, COL_STUDENTS, doc_id)


def seed_demo_students(db) -> int:
    if students_list(db):
        return 0
    for s in DEMO_STUDENTS:
        student_create(db, s)
    logger.info("seeded %d demo students", len(DEMO_STUDENTS))
    return len(DEMO_STUDENTS)


def students_import_frame(db, df: pd.DataFrame) -> Dict[str, int]:
    """CSV 由来の DataFrame(name, age, course[, drive_folder])から一括登録."""
    ok, skipped = 0, 0
    for _, row in df.iterrows():
        data = {k: row.get(k) for k in STUDENT_FIELDS if k in row and not pd.isna(row.get(k))}
        try:
            student_create(db, data)
            ok += 1
        except ValidationError:
            skipped += 1
    return {"created": ok, "skipped": skipped}


# -----------------------------
# mentors (メンター)
# -----------------------------

def _clean_mentor(data: Dict[str, Any]) -> Dict[str, Any]:
    out = {k: _strip(v) for k, v in _pick(data, MENTOR_FIELDS).items()}
    if "status" in out and out["status"] not in MENTOR_STATUSES:
        raise ValidationError(f"不正なステータスです: {out['status']}")
    if "join_date" in out and out["join_date"]:
        d = parse_date(out["join_date"])
        if d is None:
            raise ValidationError("入社日の形式が正しくありません。")
        out["join_date"] = d.isoformat()
    if "last_name" in out:
        out["name"] = out["last_name"]  # 授業記録の担当者名として使う
    return out


def mentors_list(db, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    filters = filters or {}
    rows = _stream(db, COL_MENTORS, **({"status": filters["status"]} if filters.get("status") else {}))
    kw = _strip(filters.get("keyword"))
    if kw:
        rows = [r for r in rows if _contains(r, kw, ("last_name", "first_name", "email", "specialty"))]
    return sorted(rows, key=lambda r: (_ts(r.get("created_at")), r["id"]))


def mentors_search(db, keyword: str) -> List[Dict[str, Any]]:
    return mentors_list(db, {"keyword": keyword})


def mentor_get(db, doc_id: str) -> Optional[Dict[str, Any]]:
    return _get(db, COL_MENTORS, doc_id)


def mentor_create(db, data: Dict[str, Any]) -> Dict[str, Any]:
    data = dict(data or {})
    data["status"] = data.get("status") or "active"
    clean = _clean_mentor(data)
    _require(clean, {"last_name": "姓", "first_name": "名"})
    return _create(db, COL_MENTORS, clean)


def mentor_update(db, doc_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
    clean = _clean_mentor(patch)
    if ("last_name" in clean and not clean["last_name"]) or ("first_name" in clean and not clean["first_name"]):
        raise ValidationError("姓と名は必須項目です。")
    return _update(db, COL_MENTORS, doc_id, clean, "メンターが見つかりません")


def mentor_delete(db, doc_id: str) -> bool:
    return _delete(db, COL_MENTORS, doc_id)


# -----------------------------
# classes (クラス)
# -----------------------------

def _assert_class_name_free(db, name: str, self_id: Optional[str] = None) -> None:
    for r in _stream(db, COL_CLASSES, name=name):
        if r["id"] != self_id:
            raise DuplicateNameError(f"クラス名「{name}」は既に使用されています。")


def classes_list(db, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    filters = filters or {}
    rows = _stream(db, COL_CLASSES)
    kw = _strip(filters.get("keyword"))
    if kw:
        rows = [r for r in rows if _contains(r, kw, ("name", "description"))]
    return _by_order(rows)


def classes_search(db, keyword: str) -> List[Dict[str, Any]]:
    return classes_list(db, {"keyword": keyword})


def class_get(db, doc_id: str) -> Optional[Dict[str, Any]]:
    return _get(db, COL_CLASSES, doc_id)


def class_create(db, data: Dict[str, Any]) -> Dict[str, Any]:
    clean = {k: _strip(v) for k, v in _pick(data, CLASS_FIELDS).items()}
    _require(clean, {"name": "クラス名"})
    _assert_class_name_free(db, clean["name"])
    clean["order"] = len(_stream(db, COL_CLASSES)) + 1
    return _create(db, COL_CLASSES, clean)


def class_update(db, doc_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
    # order は classes_reorder でのみ変更する
    clean = {k: _strip(v) for k, v in _pick(patch, CLASS_FIELDS).items()}
    if "name" in clean:
        if not clean["name"]:
            raise ValidationError("クラス名は必須項目です。")
        if class_get(db, doc_id) is None:
            raise NotFoundError("クラスが見つかりません")
        _assert_class_name_free(db, clean["name"], self_id=doc_id)
    return _update(db, COL_CLASSES, doc_id, clean, "クラスが見つかりません")


def class_delete(db, doc_id: str) -> bool:
    """クラスと配下のカリキュラムを1バッチで削除し, 残りの order を詰める."""
    if class_get(db, doc_id) is None:
        return False
    batch = db.batch()
    for c in _stream(db, COL_CURRICULA, class_id=doc_id):
        batch.delete(db.collection(COL_CURRICULA).document(c["id"]))
    batch.delete(db.collection(COL_CLASSES).document(doc_id))
    rest = [r for r in classes_list(db) if r["id"] != doc_id]
    _renumber(batch, db, COL_CLASSES, rest)
    batch.commit()
    logger.info("deleted %s/%s with curricula", COL_CLASSES, doc_id)
    return True


def classes_reorder(db, ordered_ids: Sequence[str]) -> List[Dict[str, Any]]:
    """ordered_ids の順に order=1..N を一括で確定する."""
    current = {r["id"]: r for r in classes_list(db)}
    _check_permutation(list(current.values()), ordered_ids)
    rows = [current[str(i)] for i in ordered_ids]
    batch = db.batch()
    _renumber(batch, db, COL_CLASSES, rows)
    batch.commit()
    return rows


# -----------------------------
# curricula (カリキュラム, クラス配下)
# -----------------------------

def curricula_list(db, class_id: Optional[str] = None) -> List[Dict[str, Any]]:
    if class_id:
        return _by_order(_stream(db, COL_CURRICULA, class_id=class_id))
    rows = _stream(db, COL_CURRICULA)
    return sorted(_by_order(rows), key=lambda r: r.get("class_id") or "")


def curriculum_get(db, doc_id: str) -> Optional[Dict[str, Any]]:
    return _get(db, COL_CURRICULA, doc_id)


def _clean_curriculum(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: _strip(v) for k, v in _pick(data, CURRICULUM_FIELDS).items()}


def curriculum_create(db, data: Dict[str, Any]) -> Dict[str, Any]:
    clean = _clean_curriculum(data)
    _require(clean, {"class_id": "クラス", "title": "タイトル"})
    if class_get(db, clean["class_id"]) is None:
        raise NotFoundError("クラスが見つかりません")
    clean["order"] = len(_stream(db, COL_CURRICULA, class_id=clean["class_id"])) + 1
    return _create(db, COL_CURRICULA, clean)


def curriculum_update(db, doc_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
    clean = _clean_curriculum(patch)
    if "title" in clean and not clean["title"]:
        raise ValidationError("タイトルは必須項目です。")
    current = curriculum_get(db, doc_id)
    if current is None:
        raise NotFoundError("カリキュラムが見つかりません")
    new_class = clean.get("class_id")
    if not new_class or new_class == current.get("class_id"):
        clean.pop("class_id", None)
        return _update(db, COL_CURRICULA, doc_id, clean, "カリキュラムが見つかりません")

    # 別クラスへ移動: 移動先の末尾に付け, 移動元を詰める
    if class_get(db, new_class) is None:
        raise NotFoundError("クラスが見つかりません")
    clean["order"] = len(_stream(db, COL_CURRICULA, class_id=new_class)) + 1
    clean["updated_at"] = to_jst()
    batch = db.batch()
    batch.update(db.collection(COL_CURRICULA).document(doc_id), clean)
    siblings = [r for r in curricula_list(db, current.get("class_id")) if r["id"] != doc_id]
    _renumber(batch, db, COL_CURRICULA, siblings)
    batch.commit()
    return {**current, **clean}


def curriculum_delete(db, doc_id: str) -> bool:
    current = curriculum_get(db, doc_id)
    if current is None:
        return False
    batch = db.batch()
    batch.delete(db.collection(COL_CURRICULA).document(doc_id))
    siblings = [r for r in curricula_list(db, current.get("class_id")) if r["id"] != doc_id]
    _renumber(batch, db, COL_CURRICULA, siblings)
    batch.commit()
    logger.info("deleted %s/%s", COL_CURRICULA, doc_id)
    return True


def curricula_reorder(db, class_id: str, ordered_ids: Sequence[str]) -> List[Dict[str, Any]]:
    if class_get(db, class_id) is None:
        raise NotFoundError("クラスが見つかりません")
    current = {r["id"]: r for r in curricula_list(db, class_id)}
    _check_permutation(list(current.values()), ordered_ids)
    rows = [current[str(i)] for i in ordered_ids]
    batch = db.batch()
    _renumber(batch, db, COL_CURRICULA, rows)
    batch.commit()
    return rows


# -----------------------------
# class_records (授業記録)
# -----------------------------

def _record_row(row: Dict[str, Any]) -> Dict[str, Any]:
    row["typing"] = decode_typing_result(row.get("typing_result"))
    return row


def _record_sort_key(r: Dict[str, Any]):
    return (_strip(r.get("date")), _ts(r.get("created_at")), r["id"])


def _clean_record(data: Dict[str, Any]) -> Dict[str, Any]:
    out = _pick(data, RECORD_FIELDS)
    for k in out:
        if k != "date":
            out[k] = _strip(out[k])
    if "date" in out:
        d = parse_date(out["date"])
        if d is None:
            raise ValidationError("日付の形式が正しくありません。")
        out["date"] = d.isoformat()
    if out.get("writing_step") and out["writing_step"] not in WRITING_STEPS:
        raise ValidationError("書き取りSTEPは1〜3で指定してください。")
    return out


_RECORD_REQUIRED = {"student_id": "生徒", "class_range": "授業範囲", "instructor": "担当者"}


def class_records_list(db, student_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """日付の新しい順."""
    rows = _stream(db, COL_CLASS_RECORDS, **({"student_id": student_id} if student_id else {}))
    return [_record_row(r) for r in sorted(rows, key=_record_sort_key, reverse=True)]


def class_records_recent(db, limit: int = 10) -> List[Dict[str, Any]]:
    return class_records_list(db)[:limit]


def class_record_get(db, doc_id: str) -> Optional[Dict[str, Any]]:
    row = _get(db, COL_CLASS_RECORDS, doc_id)
    return _record_row(row) if row else None


def class_record_create(db, data: Dict[str, Any]) -> Dict[str, Any]:
    clean = _clean_record(data)
    _require(clean, _RECORD_REQUIRED)
    student = student_get(db, clean["student_id"])
    if student is None:
        raise NotFoundError("生徒が見つかりません")
    clean.setdefault("date", today_jst().isoformat())
    clean["student_name"] = student.get("name", clean.get("student_name", ""))
    for k in RECORD_FIELDS:
        clean.setdefault(k, "")
    return _record_row(_create(db, COL_CLASS_RECORDS, clean))


def class_record_update(db, doc_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
    clean = _clean_record(patch)
    current = class_record_get(db, doc_id)
    if current is None:
        raise NotFoundError("記録が見つかりません")
    _require({**current, **clean}, _RECORD_REQUIRED)
    if "student_id" in clean and clean["student_id"] != current.get("student_id"):
        student = student_get(db, clean["student_id"])
        if student is None:
            raise NotFoundError("生徒が見つかりません")
        clean["student_name"] = student.get("name", "")
    row = _update(db, COL_CLASS_RECORDS, doc_id, clean, "記録が見つかりません")
    row.pop("typing", None)
    return _record_row(row)


def class_record_delete(db, doc_id: str) -> bool:
    return _delete(db, COL_CLASS_RECORDS, doc_id)


# -----------------------------
# comment_templates (コメントテンプレート)
# -----------------------------

def comment_templates_list(db) -> List[Dict[str, Any]]:
    """空なら既定テンプレートを投入してから返す."""
    rows = _stream(db, COL_TEMPLATES)
    if not rows:
        now = to_jst()
        batch = db.batch()
        for i, t in enumerate(DEFAULT_COMMENT_TEMPLATES, start=1):
            ref = db.collection(COL_TEMPLATES).document(f"default-{i:02d}")
            batch.set(ref, {**t, "created_at": now, "updated_at": now})
        batch.commit()
        logger.info("seeded default comment templates")
        rows = _stream(db, COL_TEMPLATES)
    return sorted(rows, key=lambda r: (_ts(r.get("created_at")), r["id"]))


def comment_template_get(db, doc_id: str) -> Optional[Dict[str, Any]]:
    return _get(db, COL_TEMPLATES, doc_id)


def comment_template_create(db, data: Dict[str, Any]) -> Dict[str, Any]:
    clean = {k: _strip(v) for k, v in _pick(data, TEMPLATE_FIELDS).items()}
    _require(clean, {"category": "カテゴリ", "text": "本文"})
    return _create(db, COL_TEMPLATES, clean)


def comment_template_update(db, doc_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
    clean = {k: _strip(v) for k, v in _pick(patch, TEMPLATE_FIELDS).items()}
    if any(not v for v in clean.values()):
        raise ValidationError("カテゴリと本文は必須項目です。")
    return _update(db, COL_TEMPLATES, doc_id, clean, "テンプレートが見つかりません")


def comment_template_delete(db, doc_id: str) -> bool:
    return _delete(db, COL_TEMPLATES, doc_id)


# -----------------------------
# student_memos (生徒メモ)
# -----------------------------

def student_memos_list(db, student_id: str) -> List[Dict[str, Any]]:
    rows = _stream(db, COL_MEMOS, student_id=student_id)
    return sorted(rows, key=lambda r: (_ts(r.get("created_at")), r["id"]), reverse=True)


def student_memo_get(db, doc_id: str) -> Optional[Dict[str, Any]]:
    return _get(db, COL_MEMOS, doc_id)


def student_memo_create(db, data: Dict[str, Any]) -> Dict[str, Any]:
    clean = {k: _strip(v) for k, v in _pick(data, MEMO_FIELDS).items()}
    _require(clean, {"student_id": "生徒", "content": "内容", "author": "記入者"})
    if student_get(db, clean["student_id"]) is None:
        raise NotFoundError("生徒が見つかりません")
    return _create(db, COL_MEMOS, clean)


def student_memo_update(db, doc_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
    clean = {k: _strip(v) for k, v in _pick(patch, ("content", "author")).items()}
    if any(not v for v in clean.values()):
        raise ValidationError("内容と記入者は必須項目です。")
    return _update(db, COL_MEMOS, doc_id, clean, "メモが見つかりません")


def student_memo_delete(db, doc_id: str) -> bool:
    return _delete(db, COL_MEMOS, doc_id)

import re
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..db import get_conn
from ..deps import get_current_user, get_optional_user, is_admin, require_admin

router = APIRouter(prefix="/api/content", tags=["content"])

RoadmapStatus = Literal["planned", "in_progress", "completed"]


def slugify(text: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (text or "").strip().lower()).strip("-")
    return slug or "post"


def _patch(cur, table: str, row_id: str, patch: dict, returning: str, *, touch: bool = False):
    fields = [f"{k} = %s" for k in patch]
    if touch:
        fields.append("updated_at = now()")
    cur.execute(
        f"UPDATE {table} SET {', '.join(fields)} WHERE id = %s RETURNING {returning}",
        list(patch.values()) + [row_id],
    )
    return cur.fetchone()


def _delete(table: str, row_id: str, label: str):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(f"DELETE FROM {table} WHERE id = %s", (row_id,))
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail=f"{label} not found")
    return {"ok": True}


# Blog

_POST_COLUMNS = "id, title, slug, excerpt, content, author_id, tags, is_published, views, published_at, created_at, updated_at"


class BlogPostIn(BaseModel):
    title: str = Field(min_length=1)
    content: str = Field(min_length=1)
    slug: Optional[str] = None
    excerpt: Optional[str] = None
    tags: List[str] = []
    is_published: bool = False


class BlogPostUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    slug: Optional[str] = None
    excerpt: Optional[str] = None
    tags: Optional[List[str]] = None
    is_published: Optional[bool] = None


@router.get("/blog")
def list_posts(
    search: Optional[str] = None,
    tag: Optional[str] = None,
    limit: int = 10,
    offset: int = 0,
    user=Depends(get_optional_user),
):
    if limit <= 0 or limit > 100 or offset < 0:
        raise HTTPException(status_code=400, detail="invalid paging")
    where, params = [], []
    if not is_admin(user):
        where.append("is_published = true")
    if tag:
        where.append("%s = ANY(tags)")
        params.append(tag)
    if search:
        where.append("(title ILIKE %s OR excerpt ILIKE %s)")
        params += [f"%{search}%", f"%{search}%"]
    where_sql = " AND ".join(where) or "true"
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT {_POST_COLUMNS}
                FROM blog_posts
                WHERE {where_sql}
                ORDER BY published_at DESC NULLS LAST, created_at DESC
                LIMIT %s OFFSET %s
                """,
                params + [limit, offset],
            )
            posts = cur.fetchall()
            cur.execute(f"SELECT COUNT(*) AS n FROM blog_posts WHERE {where_sql}", params)
            total = cur.fetchone()["n"]
    return {"posts": posts, "total": total, "limit": limit, "offset": offset}


@router.get("/blog/{post_id}")
def get_post(post_id: str, user=Depends(get_optional_user)):
    visible = "" if is_admin(user) else "AND is_published = true"
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                UPDATE blog_posts SET views = views + 1
                WHERE id = %s {visible}
                RETURNING {_POST_COLUMNS}
                """,
                (post_id,),
            )
            post = cur.fetchone()
            if not post:
                raise HTTPException(status_code=404, detail="blog post not found")
            return {"post": post}


@router.post("/blog", status_code=201)
def create_post(data: BlogPostIn, admin=Depends(require_admin)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO blog_posts (id, title, slug, excerpt, content, author_id, tags, is_published, published_at)
                VALUES (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, CASE WHEN %s THEN now() END)
                RETURNING {_POST_COLUMNS}
                """,
                (
                    data.title.strip(),
                    slugify(data.slug or data.title),
                    data.excerpt,
                    data.content,
                    admin["user_id"],
                    data.tags,
                    data.is_published,
                    data.is_published,
                ),
            )
            return {"post": cur.fetchone()}


@router.put("/blog/{post_id}", dependencies=[Depends(require_admin)])
def update_post(post_id: str, data: BlogPostUpdate):
    patch = data.model_dump(exclude_none=True)
    if "slug" in patch:
        patch["slug"] = slugify(patch["slug"])
    if not patch:
        return {"ok": True}
    with get_conn() as conn:
        with conn.cursor() as cur:
            post = _patch(cur, "blog_posts", post_id, patch, _POST_COLUMNS, touch=True)
            if not post:
                raise HTTPException(status_code=404, detail="blog post not found")
            if post["is_published"] and post["published_at"] is None:
                cur.execute(
                    f"UPDATE blog_posts SET published_at = now() WHERE id = %s RETURNING {_POST_COLUMNS}",
                    (post_id,),
                )
                post = cur.fetchone()
            return {"post": post}


@router.delete("/blog/{post_id}", dependencies=[Depends(require_admin)])
def delete_post(post_id: str):
    return _delete("blog_posts", post_id, "blog post")


# FAQs

_FAQ_COLUMNS = "id, question, answer, category, sort_order, is_published, created_at"


class FaqIn(BaseModel):
    question: str = Field(min_length=1)
    answer: str = Field(min_length=1)
    category: Optional[str] = None
    sort_order: int = 0
    is_published: bool = True


class FaqUpdate(BaseModel):
    question: Optional[str] = None
    answer: Optional[str] = None
    category: Optional[str] = None
    sort_order: Optional[int] = None
    is_published: Optional[bool] = None


@router.get("/faq")
def list_faqs(category: Optional[str] = None, user=Depends(get_optional_user)):
    where, params = [], []
    if not is_admin(user):
        where.append("is_published = true")
    if category:
        where.append("category = %s")
        params.append(category)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT {_FAQ_COLUMNS}
                FROM faqs
                WHERE {' AND '.join(where) or 'true'}
                ORDER BY sort_order, created_at
                """,
                params,
            )
            return {"faqs": cur.fetchall()}


@router.post("/faq", status_code=201, dependencies=[Depends(require_admin)])
def create_faq(data: FaqIn):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO faqs (id, question, answer, category, sort_order, is_published)
                VALUES (gen_random_uuid(), %s, %s, %s, %s, %s)
                RETURNING {_FAQ_COLUMNS}
                """,
                (data.question.strip(), data.answer, data.category, data.sort_order, data.is_published),
            )
            return {"faq": cur.fetchone()}


@router.put("/faq/{faq_id}", dependencies=[Depends(require_admin)])
def update_faq(faq_id: str, data: FaqUpdate):
    patch = data.model_dump(exclude_none=True)
    if not patch:
        return {"ok": True}
    with get_conn() as conn:
        with conn.cursor() as cur:
            faq = _patch(cur, "faqs", faq_id, patch, _FAQ_COLUMNS)
            if not faq:
                raise HTTPException(status_code=404, detail="faq not found")
            return {"faq": faq}


@router.delete("/faq/{faq_id}", dependencies=[Depends(require_admin)])
def delete_faq(faq_id: str):
    return _delete("faqs", faq_id, "faq")


# Testimonials

_TESTIMONIAL_COLUMNS = "id, customer_name, company, content, rating, is_published, created_at"


class TestimonialIn(BaseModel):
    customer_name: str = Field(min_length=1)
    content: str = Field(min_length=1)
    company: Optional[str] = None
    rating: int = Field(default=5, ge=1, le=5)
    is_published: bool = False


class TestimonialUpdate(BaseModel):
    customer_name: Optional[str] = None
    content: Optional[str] = None
    company: Optional[str] = None
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    is_published: Optional[bool] = None


@router.get("/testimonials")
def list_testimonials(user=Depends(get_optional_user)):
    visible = "true" if is_admin(user) else "is_published = true"
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"SELECT {_TESTIMONIAL_COLUMNS} FROM testimonials WHERE {visible} ORDER BY created_at DESC"
            )
            return {"testimonials": cur.fetchall()}


@router.post("/testimonials", status_code=201, dependencies=[Depends(require_admin)])
def create_testimonial(data: TestimonialIn):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO testimonials (id, customer_name, company, content, rating, is_published)
                VALUES (gen_random_uuid(), %s, %s, %s, %s, %s)
                RETURNING {_TESTIMONIAL_COLUMNS}
                """,
                (data.customer_name.strip(), data.company, data.content, data.rating, data.is_published),
            )
            return {"testimonial": cur.fetchone()}


@router.put("/testimonials/{testimonial_id}", dependencies=[Depends(require_admin)])
def update_testimonial(testimonial_id: str, data: TestimonialUpdate):
    patch = data.model_dump(exclude_none=True)
    if not patch:
        return {"ok": True}
    with get_conn() as conn:
        with conn.cursor() as cur:
            row = _patch(cur, "testimonials", testimonial_id, patch, _TESTIMONIAL_COLUMNS)
            if not row:
                raise HTTPException(status_code=404, detail="testimonial not found")
            return {"testimonial": row}


@router.delete("/testimonials/{testimonial_id}", dependencies=[Depends(require_admin)])
def delete_testimonial(testimonial_id: str):
    return _delete("testimonials", testimonial_id, "testimonial")


# Roadmap

_FEATURE_COLUMNS = "id, title, description, status, votes, is_published, created_at"


class FeatureIn(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    status: RoadmapStatus = "planned"
    is_published: bool = True


class FeatureUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[RoadmapStatus] = None
    is_published: Optional[bool] = None


@router.get("/roadmap")
def list_features(status: Optional[RoadmapStatus] = None, user=Depends(get_optional_user)):
    where, params = [], []
    if not is_admin(user):
        where.append("f.is_published = true")
    if status:
        where.append("f.status = %s")
        params.append(status)
    voted = "false"
    if user:
        voted = "EXISTS (SELECT 1 FROM feature_votes v WHERE v.feature_id = f.id AND v.user_id = %s)"
        params.insert(0, user["user_id"])
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT f.id, f.title, f.description, f.status, f.votes, f.is_published, f.created_at,
                       {voted} AS has_voted
                FROM roadmap_features f
                WHERE {' AND '.join(where) or 'true'}
                ORDER BY f.votes DESC, f.created_at DESC
                """,
                params,
            )
            return {"features": cur.fetchall()}


@router.post("/roadmap", status_code=201, dependencies=[Depends(require_admin)])
def create_feature(data: FeatureIn):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO roadmap_features (id, title, description, status, is_published)
                VALUES (gen_random_uuid(), %s, %s, %s, %s)
                RETURNING {_FEATURE_COLUMNS}
                """,
                (data.title.strip(), data.description, data.status, data.is_published),
            )
            return {"feature": cur.fetchone()}


@router.put("/roadmap/{feature_id}", dependencies=[Depends(require_admin)])
def update_feature(feature_id: str, data: FeatureUpdate):
    patch = data.model_dump(exclude_none=True)
    if not patch:
        return {"ok": True}
    with get_conn() as conn:
        with conn.cursor() as cur:
            row = _patch(cur, "roadmap_features", feature_id, patch, _FEATURE_COLUMNS)
            if not row:
                raise HTTPException(status_code=404, detail="feature not found")
            return {"feature": row}


@router.delete("/roadmap/{feature_id}", dependencies=[Depends(require_admin)])
def delete_feature(feature_id: str):
    return _delete("roadmap_features", feature_id, "feature")


@router.post("/roadmap/{feature_id}/vote")
def vote_feature(feature_id: str, user=Depends(get_current_user)):
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT id FROM roadmap_features WHERE id = %s AND is_published = true FOR UPDATE",
                    (feature_id,),
                )
                if not cur.fetchone():
                    raise HTTPException(status_code=404, detail="feature not found")
                cur.execute(
                    """
                    INSERT INTO feature_votes (feature_id, user_id)
                    VALUES (%s, %s)
                    ON CONFLICT (feature_id, user_id) DO NOTHING
                    """,
                    (feature_id, user["user_id"]),
                )
                if cur.rowcount == 0:
                    raise HTTPException(status_code=409, detail="already voted for this feature")
                cur.execute(
                    "UPDATE roadmap_features SET votes = votes + 1 WHERE id = %s RETURNING votes",
                    (feature_id,),
                )
                return {"ok": True, "votes": cur.fetchone()["votes"]}


@router.delete("/roadmap/{feature_id}/vote")
def unvote_feature(feature_id: str, user=Depends(get_current_user)):
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    "DELETE FROM feature_votes WHERE feature_id = %s AND user_id = %s",
                    (feature_id, user["user_id"]),
                )
                if cur.rowcount == 0:
                    raise HTTPException(status_code=404, detail="vote not found")
                cur.execute(
                    "UPDATE roadmap_features SET votes = GREATEST(votes - 1, 0) WHERE id = %s RETURNING votes",
                    (feature_id,),
                )
                return {"ok": True, "votes": cur.fetchone()["votes"]}

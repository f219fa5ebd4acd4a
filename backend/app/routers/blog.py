from fastapi import APIRouter, Depends, HTTPException

from app.models import BlogListResponse, BlogPost
from app.services.blog_store import BlogStore, get_blog_store

router = APIRouter(prefix="/blog", tags=["blog"])

EMPTY_BLOG_MESSAGE = "No hay artículos publicados aún."


@router.get("", response_model=BlogListResponse)
def list_published_posts(store: BlogStore = Depends(get_blog_store)):
    posts = store.list_posts(published_only=True)
    return BlogListResponse(posts=posts, message=None if posts else EMPTY_BLOG_MESSAGE)


@router.get("/{post_id}", response_model=BlogPost)
def get_published_post(post_id: int, store: BlogStore = Depends(get_blog_store)):
    post = store.get_post(post_id, published_only=True)
    if not post:
        raise HTTPException(status_code=404, detail="Blog post not found")
    return post

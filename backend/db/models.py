from datetime import datetime
from sqlalchemy import (
    Column, Integer, Text, Float, Boolean, ForeignKey, Index,
    Date, DateTime,
)
from sqlalchemy.orm import relationship
from db.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    phone_number = Column(Text, unique=True, nullable=False)
    user_name = Column(Text)
    gender = Column(Text)  # male | female
    age = Column(Integer)
    weight_kg = Column(Float)
    height_cm = Column(Float)
    goal_calories = Column(Integer, nullable=False, default=2000)
    goal_protein_g = Column(Integer, nullable=False, default=150)
    onboarding_completed = Column(Boolean, nullable=False, default=False)
    current_streak_days = Column(Integer, nullable=False, default=0)
    longest_streak_days = Column(Integer, nullable=False, default=0)
    total_days_logged = Column(Integer, nullable=False, default=0)
    last_user_message_at = Column(DateTime)
    last_interaction_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    daily_summaries = relationship("DailySummary", back_populates="user", cascade="all, delete-orphan")
    meals = relationship("Meal", back_populates="user", cascade="all, delete-orphan")
    exercises = relationship("ExerciseLog", back_populates="user", cascade="all, delete-orphan")


class FoodItem(Base):
    __tablename__ = "food_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    name_normalized = Column(Text, nullable=False)
    aliases = Column(Text)  # JSON array of alternate names
    category = Column(Text)
    serving_size = Column(Text)  # human label, e.g. "100g"
    serving_size_grams = Column(Float, nullable=False, default=100.0)
    calories = Column(Float, nullable=False, default=0.0)  # per serving
    protein_g = Column(Float, default=0.0)
    carbs_g = Column(Float, default=0.0)
    fat_g = Column(Float, default=0.0)
    fiber_g = Column(Float, default=0.0)
    common_measures = Column(Text)  # JSON array of {"name": str, "grams": float}
    usage_count = Column(Integer, nullable=False, default=0)
    last_used_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)


class ExerciseItem(Base):
    __tablename__ = "exercise_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    name_normalized = Column(Text, nullable=False)
    aliases = Column(Text)  # JSON array of alternate names
    category = Column(Text)  # cardio | strength | flexibility | sport
    met_light = Column(Float)
    met_moderate = Column(Float)
    met_intense = Column(Float)
    usage_count = Column(Integer, nullable=False, default=0)
    last_used_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    phone_number = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="active")  # active | closed
    last_message_at = Column(DateTime, nullable=False)
    conversation_state = Column(Text)  # JSON object
    created_at = Column(DateTime, default=datetime.utcnow)

    messages = relationship("Message", back_populates="conversation", cascade="all, delete-orphan")


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=False)
    role = Column(Text, nullable=False)  # user | assistant
    content = Column(Text, nullable=False)
    intent = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)

    conversation = relationship("Conversation", back_populates="messages")


class DailySummary(Base):
    __tablename__ = "daily_summaries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    date = Column(Date, nullable=False)  # local calendar date
    total_calories_consumed = Column(Float, nullable=False, default=0.0)
    total_calories_burned = Column(Float, nullable=False, default=0.0)
    net_calories = Column(Float, nullable=False, default=0.0)
    total_protein_g = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="daily_summaries")
    meals = relationship("Meal", back_populates="daily_summary")
    exercises = relationship("ExerciseLog", back_populates="daily_summary")


class Meal(Base):
    __tablename__ = "meals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    daily_summary_id = Column(Integer, ForeignKey("daily_summaries.id"), nullable=False)
    status = Column(Text, nullable=False, default="confirmed")  # confirmed | cancelled
    description = Column(Text)
    items = Column(Text, nullable=False)  # JSON array of resolved items
    total_calories = Column(Float, nullable=False, default=0.0)
    total_protein_g = Column(Float, default=0.0)
    total_carbs_g = Column(Float, default=0.0)
    total_fat_g = Column(Float, default=0.0)
    total_fiber_g = Column(Float, default=0.0)
    logged_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="meals")
    daily_summary = relationship("DailySummary", back_populates="meals")


class ExerciseLog(Base):
    __tablename__ = "exercises"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    daily_summary_id = Column(Integer, ForeignKey("daily_summaries.id"), nullable=False)
    exercise_item_id = Column(Integer, ForeignKey("exercise_items.id"), nullable=True)
    status = Column(Text, nullable=False, default="confirmed")  # confirmed | cancelled
    exercise_name = Column(Text, nullable=False)
    duration_minutes = Column(Float, nullable=False)
    intensity = Column(Text, nullable=False, default="moderate")  # light | moderate | intense
    met_value = Column(Float, nullable=False)
    calories_burned = Column(Float, nullable=False, default=0.0)
    logged_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="exercises")
    daily_summary = relationship("DailySummary", back_populates="exercises")


class CatalogFallbackLog(Base):
    __tablename__ = "catalog_fallback_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    catalog = Column(Text, nullable=False)  # food | exercise
    search_query = Column(Text, nullable=False)
    normalized_query = Column(Text, nullable=False)
    user_phone = Column(Text)
    intent = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)


# Indexes
Index("idx_food_items_name", FoodItem.name_normalized)
Index("idx_food_items_usage", FoodItem.usage_count)
Index("idx_exercise_items_name", ExerciseItem.name_normalized)
Index("idx_exercise_items_usage", ExerciseItem.usage_count)
Index("idx_conversations_phone_status", Conversation.phone_number, Conversation.status, Conversation.last_message_at)
Index("idx_messages_conversation_date", Message.conversation_id, Message.created_at)
Index("uq_daily_summaries_user_date", DailySummary.user_id, DailySummary.date, unique=True)
Index("idx_meals_summary_status", Meal.daily_summary_id, Meal.status)
Index("idx_exercises_summary_status", ExerciseLog.daily_summary_id, ExerciseLog.status)
Index("idx_catalog_fallback_query", CatalogFallbackLog.catalog, CatalogFallbackLog.normalized_query)
